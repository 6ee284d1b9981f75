"""HTTP request handlers for s3drive."""
