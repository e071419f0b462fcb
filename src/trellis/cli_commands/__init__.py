"""Click command modules registered on the ``trellis`` group."""
