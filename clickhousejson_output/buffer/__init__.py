"""In-process buffer host: chunks, placeholders and the flush loop."""
