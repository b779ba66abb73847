"""Layer operations: unpack, whiteout resolution, link relocation, merge."""
