"""Pure reporting computations over task sets: burndown, velocity, analytics."""
