"""
CLI entry point, when used as a module: `python -m objecthandler`.

Useful for debugging in the IDEs (use the start-mode "Module", module "objecthandler").
"""
from objecthandler import cli

if __name__ == '__main__':
    cli.main()
