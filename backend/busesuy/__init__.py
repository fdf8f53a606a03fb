"""BusesUY: live STM bus arrivals over Google transit directions."""
