"""StockArena: fantasy stock contests with an automated lifecycle."""
