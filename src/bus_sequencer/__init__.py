"""
bus_sequencer: スクリプト駆動のバストランザクション・シーケンサ。
"""
__version__ = "0.1.0"
