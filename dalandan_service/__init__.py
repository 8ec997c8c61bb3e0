"""DalandanCare guidance service: citrus-leaf recommendations and safety-constrained chat."""

__version__ = "1.0.0"
