"""HTTP resources for GitHub webhook ingestion and queue health."""
