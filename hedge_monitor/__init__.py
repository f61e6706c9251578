"""FX hedge position monitor and transaction client."""
