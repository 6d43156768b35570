"""
Message pipeline.

- processor: one-message orchestration (MessageProcessor, ProcessingResult)
- dates: normalization of extracted dates and times
"""
