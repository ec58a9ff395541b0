"""HTTP request handlers for chunkdrive."""
