"""Domain services of the ichor economy, one subpackage per concern."""
