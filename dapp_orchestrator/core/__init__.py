"""Core primitives shared by every component: exceptions and the clock."""
