"""Action orchestration core: store, queue, dispatcher, and tool-call bridge."""
