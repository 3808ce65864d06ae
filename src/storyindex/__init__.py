"""storyindex: turn a folder of mixed document files into a deduplicated, embedded story corpus."""
