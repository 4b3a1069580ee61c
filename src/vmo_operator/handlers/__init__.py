"""kopf handlers feeding the object cache, the work queue and the live configuration."""
