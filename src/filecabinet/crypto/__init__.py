"""Key derivation and authenticated encryption primitives."""
