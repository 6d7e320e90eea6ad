"""AWS client helpers."""
