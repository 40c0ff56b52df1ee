"""Task execution core: interpretation, dispatch and the conversation loop."""
