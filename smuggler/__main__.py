from smuggler.cli.main import main

main()
