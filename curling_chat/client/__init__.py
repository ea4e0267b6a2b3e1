"""Chat client: stream decoding, tool result observer and the session object."""
