"""WhatsApp Business console on the Meta Cloud API."""
