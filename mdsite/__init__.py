"""Static site generator for a folder of markdown documents."""
