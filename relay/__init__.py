"""SMS relay: API client, OTP extraction, destinations and the forward cycle."""
