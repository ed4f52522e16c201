"""Circuit breakers, a per-key panel of them, and the sliding-window metrics behind them."""