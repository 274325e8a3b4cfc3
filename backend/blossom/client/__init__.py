"""Client-side policy gate and the view state it drives."""
