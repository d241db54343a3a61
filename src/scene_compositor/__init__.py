"""Scene compositor — turns generated scene clips into one exported video."""
