"""Lab CMS: content dashboard for a research group website."""
