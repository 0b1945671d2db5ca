"""HTTP surface of the order engine."""
