"""Room signaling server for multi-party WebRTC sessions."""
