"""Two-player trivia quiz backend."""
