"""HTTP surface: public webhooks and worker push endpoints."""
