"""Pipeline stages and the data transformations they run."""
