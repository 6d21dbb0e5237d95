"""Fan-facing reply pipeline: gating, prompt assembly, streaming and pacing."""
