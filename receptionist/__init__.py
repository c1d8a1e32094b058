"""Phone front-desk receptionist: Twilio speech turns in, a filled lead out."""
