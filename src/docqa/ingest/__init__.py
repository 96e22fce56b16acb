"""Document ingestion: normalisation, chunking, extraction and OCR batching."""
