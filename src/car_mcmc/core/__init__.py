"""時系列データと例外階層"""
