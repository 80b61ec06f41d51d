"""URL shortener with cache-aside redirects, a Kafka click pipeline and click analytics."""
