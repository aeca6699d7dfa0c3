"""Platform message processors: raw webhook payloads to WebhookMessage lists."""
