"""LLM layer: request types, credential health, failover dispatcher, provider clients."""
