"""FastAPI surface for zonectl."""
