"""Human-facing output: environment dump, info rendering, shell completion."""
