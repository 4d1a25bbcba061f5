"""car-mcmc コマンドラインインターフェース"""
