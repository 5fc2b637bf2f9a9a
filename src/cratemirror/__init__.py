"""crate-mirror: keeps a local, verified replica of a crates.io-style registry."""

__version__ = "0.1.0"
