from labchain.cli import main


main()
