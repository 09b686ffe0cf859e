"""Task worker loop and the status channel it reports through."""
