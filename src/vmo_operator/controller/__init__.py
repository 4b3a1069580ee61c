"""Work queue, sync loop and pipeline steps."""
