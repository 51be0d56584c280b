"""命令行入口（typer）。"""
