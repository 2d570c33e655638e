"""Engine adapters: one uniform CRUD surface over MySQL, PostgreSQL and MongoDB."""
