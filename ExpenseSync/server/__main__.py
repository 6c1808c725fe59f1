from .app import exec_

exec_()
