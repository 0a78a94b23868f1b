"""Launch Tracker - community release-date predictions."""
