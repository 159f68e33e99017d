from sheetguard.cli import main_entry

main_entry()
